"""Queue, workers and audio processing for the analysis and adjustment stages."""
