"""
Builder Worker — wasm_builder

Consumes build jobs from a Redis queue and runs the pipeline for each.
The job summary (BuildReport, or the fatal error) is stored back in
Redis under ``wasm_builder:result:<job_id>``.

Job payload:
    {"job_id": "...", "manifest_path": "...", "output_root": "...",
     "features": [...], "no_default_features": false, "stack_size": 131072}
"""
import json
import logging
import subprocess
import time
from pathlib import Path
from typing import Callable, Optional

import redis

from wasm_builder.config import Settings
from wasm_builder.core.build_context import CompilationRequest
from wasm_builder.errors import BuildError
from wasm_builder.io.schema import BuildReport
from wasm_builder.runner import run_build

logger = logging.getLogger("wasm_builder_worker")

RESULT_KEY_PREFIX = "wasm_builder:result:"


class BuildWorker:
    """
    Worker that pulls build jobs from Redis and executes them.
    Results are written back to Redis; artifacts are written to disk.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        redis_client: Optional[redis.Redis] = None,
        build: Callable[..., BuildReport] = run_build,
    ):
        self.settings = settings or Settings()
        self.redis_client = redis_client
        self.build = build

    def connect(self):
        """Establish the Redis connection."""
        if self.redis_client is not None:
            return
        logger.info("Connecting to Redis...")
        self.redis_client = redis.Redis(
            host=self.settings.REDIS_HOST,
            port=self.settings.REDIS_PORT,
            db=self.settings.REDIS_DB,
            decode_responses=True,
        )
        self.redis_client.ping()
        logger.info("Redis connected")

    def poll_once(self, timeout: int = 5) -> bool:
        """Pop and process at most one job.  Returns True if a job was handled."""
        if self.redis_client is None:
            raise RuntimeError("Redis client not connected")

        result = self.redis_client.blpop([self.settings.BUILD_QUEUE], timeout=timeout)
        if result is None:
            return False

        _, job_data = result  # type: ignore
        job = json.loads(job_data)
        logger.info(f"Received build job: {job.get('job_id')}")
        self.process_build(job)
        return True

    def run(self):
        """Main worker loop — blocking pop from the Redis queue."""
        self.connect()
        logger.info("wasm_builder worker started, waiting for jobs...")

        while True:
            try:
                self.poll_once()
            except KeyboardInterrupt:
                logger.info("Worker shutting down...")
                break
            except Exception as e:
                logger.error(f"Error in worker loop: {e}", exc_info=True)
                time.sleep(5)

    # -----------------------------------------------------------------
    # Job processing
    # -----------------------------------------------------------------

    def _features(self, job: dict, default) -> tuple:
        features = job.get("features", default)
        # comma- or space-separated, like cargo --features "std,alloc"
        if isinstance(features, str):
            return tuple(f for f in features.replace(",", " ").split() if f)
        if not isinstance(features, (list, tuple)):
            raise ValueError(f"features must be a list or a string, got {features!r}")
        return tuple(str(f) for f in features)

    def _request(self, job: dict) -> CompilationRequest:
        base = self.settings.compilation_request()
        return CompilationRequest(
            features=self._features(job, base.features),
            no_default_features=bool(
                job.get("no_default_features", base.no_default_features)
            ),
            stack_size=int(job.get("stack_size", base.stack_size)),
        )

    def process_build(self, job: dict) -> dict:
        """Run one job and publish its summary.  Never raises BuildError."""
        job_id = job["job_id"]
        manifest_path = Path(job["manifest_path"])
        output_root = job.get("output_root")

        summary: dict
        try:
            report = self.build(
                manifest_path,
                output_root=Path(output_root) if output_root else None,
                settings=self.settings,
                request=self._request(job),
            )
            summary = {
                "job_id": job_id,
                "status": "SUCCESS",
                "report": report.model_dump(mode="json"),
            }
            logger.info(
                f"Build job {job_id} finished: "
                f"{len(report.record.artifacts)} artifacts in {report.output_dir}"
            )
        except (BuildError, ValueError, OSError, subprocess.SubprocessError) as e:
            logger.error(f"Build job {job_id} failed: {e}")
            summary = {
                "job_id": job_id,
                "status": "FAILED",
                "error_type": type(e).__name__,
                "error_message": str(e),
            }

        self.publish(job_id, summary)
        return summary

    def publish(self, job_id: str, summary: dict):
        if self.redis_client is None:
            logger.error("Redis not connected — cannot publish result")
            return
        self.redis_client.set(RESULT_KEY_PREFIX + job_id, json.dumps(summary))


# =============================================================================
# Entry point
# =============================================================================

if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
    )
    BuildWorker().run()
