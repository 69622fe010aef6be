# Copyright 2025 podpace.app
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

import json
import shutil
import signal
import threading
from pathlib import Path

import click
import redis

from .core.adjustment_worker import AdjustmentWorker
from .core.analysis_worker import AnalysisWorker
from .core.audio_tools import PydubMediaTool, RubberbandStretcher
from .core.queue_manager import QueueManager, TaskStage
from .core.task_handlers import create_task_handlers
from .core.task_worker import WorkerPool
from .core.transcription_client import AssemblyAIClient
from .logging import configure_structlog
from .models.job import QuotaKind, TargetSpec, UserRole
from .repositories.redis_job_repository import RedisJobRepository
from .repositories.redis_quota_repository import RedisQuotaLedger
from .services.job_service import JobService
from .services.pipeline_gate import PipelineGate
from .utils.config import load_config
from .utils.exceptions import PodpaceError, QuotaExceededError

ROLE_CHOICE = click.Choice([role.value for role in UserRole], case_sensitive=False)


class CLIContext:
    """Container for CLI dependency injection with type safety."""

    def __init__(
        self,
        config,
        redis_client,
        job_repository,
        quota_repository,
        queue_manager,
        gate,
        job_service,
        media_tool,
    ):
        self.config = config
        self.redis_client = redis_client
        self.job_repository = job_repository
        self.quota_repository = quota_repository
        self.queue_manager = queue_manager
        self.gate = gate
        self.job_service = job_service
        self.media_tool = media_tool


def parse_target(value: str) -> TargetSpec:
    """Parse "Speaker_A=120" into a TargetSpec."""
    speaker_id, sep, wpm = value.partition("=")
    if not sep or not speaker_id or not wpm.strip().isdigit():
        raise click.BadParameter(f"expected SPEAKER=WPM, got {value!r}")
    return TargetSpec(id=speaker_id.strip(), target_wpm=int(wpm))


@click.group()
@click.option("--config", "-c", help="Path to .env config file")
@click.pass_context
def main(ctx, config):
    """podpace - Per-speaker speaking-rate normalization"""
    configure_structlog()

    try:
        config_obj = load_config(config)

        # Initialize all shared services once (dependency injection)
        redis_client = redis.Redis.from_url(config_obj.redis_url, decode_responses=True)
        job_repository = RedisJobRepository(redis_client)
        quota_repository = RedisQuotaLedger(
            redis_client,
            limits={
                QuotaKind.ANALYSIS: config_obj.analysis_daily_limit,
                QuotaKind.ADJUSTMENT: config_obj.adjustment_daily_limit,
            },
        )
        queue_manager = QueueManager(str(config_obj.database_path))
        gate = PipelineGate(job_repository, quota_repository, queue_manager)
        media_tool = PydubMediaTool(bitrate=config_obj.output_bitrate)
        job_service = JobService(
            gate,
            job_repository,
            quota_repository,
            media_tool,
            upload_dir=config_obj.upload_dir,
            preview_max_seconds=config_obj.preview_max_seconds,
        )

        ctx.obj = CLIContext(
            config=config_obj,
            redis_client=redis_client,
            job_repository=job_repository,
            quota_repository=quota_repository,
            queue_manager=queue_manager,
            gate=gate,
            job_service=job_service,
            media_tool=media_tool,
        )

    except Exception as e:
        click.echo(f"❌ Configuration error: {e}", err=True)
        ctx.exit(1)


@main.command()
@click.argument("stage", type=click.Choice([stage.value for stage in TaskStage]))
@click.option("--concurrency", "-n", type=int, help="Number of jobs processed at once (default from config)")
@click.pass_context
def worker(ctx, stage, concurrency):
    """Run a worker pool for one stage until interrupted"""
    if ctx.obj is None:
        click.echo("❌ Configuration not loaded. Please check your setup.", err=True)
        ctx.exit(1)

    config = ctx.obj.config
    concurrency = concurrency or config.worker_concurrency
    task_stage = TaskStage(stage)

    try:
        if task_stage == TaskStage.ANALYZE:
            handlers = create_task_handlers(analysis_worker=_build_analysis_worker(ctx.obj))
        else:
            handlers = create_task_handlers(adjustment_worker=_build_adjustment_worker(ctx.obj))
    except ValueError as e:
        click.echo(f"❌ {e}", err=True)
        ctx.exit(1)

    pool = WorkerPool(
        ctx.obj.queue_manager,
        task_stage,
        handlers[task_stage],
        concurrency=concurrency,
        stale_timeout_minutes=config.stale_task_timeout_minutes,
    )

    stop_requested = threading.Event()

    def _request_stop(signum, frame):
        click.echo("\n⏳ Stopping after current jobs finish...")
        stop_requested.set()

    signal.signal(signal.SIGINT, _request_stop)
    signal.signal(signal.SIGTERM, _request_stop)

    pool.start()
    click.echo(f"✓ {stage} worker running with concurrency {concurrency} (Ctrl+C to stop)")

    while not stop_requested.is_set():
        stop_requested.wait(1.0)

    pool.stop()
    click.echo("✓ Worker stopped")


def _build_analysis_worker(obj: CLIContext) -> AnalysisWorker:
    config = obj.config
    return AnalysisWorker(
        obj.job_repository,
        AssemblyAIClient(config.assemblyai_api_key, config.assemblyai_base_url),
        poll_interval=config.transcript_poll_interval,
        max_poll_attempts=config.transcript_max_poll_attempts,
    )


def _build_adjustment_worker(obj: CLIContext) -> AdjustmentWorker:
    config = obj.config
    return AdjustmentWorker(
        obj.job_repository,
        obj.media_tool,
        RubberbandStretcher(binary=config.rubberband_binary),
        output_dir=config.output_dir,
        temp_dir=config.temp_dir,
        wpm_tolerance=config.wpm_tolerance,
        stretch_tolerance=config.stretch_tolerance,
        min_stretch_factor=config.min_stretch_factor,
        max_stretch_factor=config.max_stretch_factor,
    )


@main.command()
@click.argument("audio", type=click.Path(exists=True, dir_okay=False))
@click.option("--user", "user_id", required=True, help="User id to meter against")
@click.option("--role", type=ROLE_CHOICE, default=UserRole.FREE.value, show_default=True)
@click.option("--content-type", help="MIME type of the upload (e.g. audio/mpeg)")
@click.pass_context
def submit(ctx, audio, user_id, role, content_type):
    """Upload an audio file for analysis"""
    if ctx.obj is None:
        click.echo("❌ Configuration not loaded. Please check your setup.", err=True)
        ctx.exit(1)

    try:
        job_id = ctx.obj.job_service.submit_upload(
            user_id,
            UserRole(role.upper()),
            audio,
            click.format_filename(audio, shorten=True),
            content_type=content_type,
        )
    except QuotaExceededError as e:
        click.echo(f"❌ {e.message}. Resets in {e.reset_seconds}s.", err=True)
        ctx.exit(2)
    except PodpaceError as e:
        click.echo(f"❌ {e}", err=True)
        ctx.exit(1)

    click.echo(f"✓ Job queued for analysis: {job_id}")


@main.command()
@click.argument("job_id")
@click.option("--target", "-t", "targets", multiple=True, required=True, help="SPEAKER=WPM, e.g. Speaker_A=120")
@click.option("--user", "user_id", required=True, help="User id to meter against")
@click.option("--role", type=ROLE_CHOICE, default=UserRole.FREE.value, show_default=True)
@click.pass_context
def adjust(ctx, job_id, targets, user_id, role):
    """Queue an analyzed job for rate adjustment"""
    if ctx.obj is None:
        click.echo("❌ Configuration not loaded. Please check your setup.", err=True)
        ctx.exit(1)

    try:
        specs = [parse_target(value) for value in targets]
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint="--target")

    try:
        ctx.obj.job_service.request_adjustment(user_id, UserRole(role.upper()), job_id, specs)
    except QuotaExceededError as e:
        click.echo(f"❌ {e.message}. Resets in {e.reset_seconds}s.", err=True)
        ctx.exit(2)
    except PodpaceError as e:
        click.echo(f"❌ {e}", err=True)
        ctx.exit(1)

    click.echo(f"✓ Job queued for adjustment: {job_id}")


@main.command()
@click.argument("job_id")
@click.option("--user", "user_id", help="Include role and quota for this user")
@click.option("--role", type=ROLE_CHOICE, default=UserRole.FREE.value, show_default=True)
@click.pass_context
def status(ctx, job_id, user_id, role):
    """Show a job's status as JSON"""
    if ctx.obj is None:
        click.echo("❌ Configuration not loaded. Please check your setup.", err=True)
        ctx.exit(1)

    try:
        data = ctx.obj.job_service.get_status(
            job_id,
            user_id=user_id,
            role=UserRole(role.upper()) if user_id else None,
        )
    except PodpaceError as e:
        click.echo(f"❌ {e}", err=True)
        ctx.exit(1)

    click.echo(json.dumps(data, indent=2))


@main.command()
@click.option("--user", "user_id", required=True, help="User id")
@click.pass_context
def quota(ctx, user_id):
    """Show today's quota usage for a user"""
    if ctx.obj is None:
        click.echo("❌ Configuration not loaded. Please check your setup.", err=True)
        ctx.exit(1)

    for kind, usage in ctx.obj.job_service.get_quota(user_id).items():
        click.echo(f"{kind:<12} {usage['used']}/{usage['limit']} used, {usage['remaining']} remaining")
    click.echo(f"Resets in {ctx.obj.quota_repository.seconds_until_reset()}s (UTC midnight)")


@main.command()
@click.argument("job_id")
@click.argument("speaker_id")
@click.option("--output", "-o", type=click.Path(dir_okay=False, writable=True), required=True)
@click.pass_context
def preview(ctx, job_id, speaker_id, output):
    """Write a short MP3 sample of one speaker"""
    if ctx.obj is None:
        click.echo("❌ Configuration not loaded. Please check your setup.", err=True)
        ctx.exit(1)

    try:
        data = ctx.obj.job_service.get_preview(job_id, speaker_id)
    except PodpaceError as e:
        click.echo(f"❌ {e}", err=True)
        ctx.exit(1)

    with open(output, "wb") as f:
        f.write(data)
    click.echo(f"✓ Preview written to {output} ({len(data)} bytes)")


@main.command()
@click.argument("job_id")
@click.option("--output-dir", "-o", type=click.Path(file_okay=False), default=".", show_default=True)
@click.pass_context
def download(ctx, job_id, output_dir):
    """Copy a completed job's output file"""
    if ctx.obj is None:
        click.echo("❌ Configuration not loaded. Please check your setup.", err=True)
        ctx.exit(1)

    try:
        info = ctx.obj.job_service.get_download(job_id)
    except PodpaceError as e:
        click.echo(f"❌ {e}", err=True)
        ctx.exit(1)

    destination = Path(output_dir) / info.filename
    destination.parent.mkdir(parents=True, exist_ok=True)
    shutil.copyfile(info.path, destination)
    click.echo(f"✓ Saved {destination}")


@main.command("queue-stats")
@click.option("--cleanup-days", type=int, help="Also delete finished tasks older than this many days")
@click.pass_context
def queue_stats(ctx, cleanup_days):
    """Show task counts per stage and status"""
    if ctx.obj is None:
        click.echo("❌ Configuration not loaded. Please check your setup.", err=True)
        ctx.exit(1)

    queue_manager = ctx.obj.queue_manager
    if cleanup_days is not None:
        deleted = queue_manager.cleanup_old_tasks(days=cleanup_days)
        click.echo(f"✓ Deleted {deleted} old tasks")

    for stage, counts in queue_manager.get_queue_stats().items():
        summary = ", ".join(f"{name}={count}" for name, count in counts.items())
        click.echo(f"{stage:<8} {summary}")


if __name__ == "__main__":
    main()
