"""
Remote work dispatch.

Waits for the worker to accept SSH, ships the extraction payload, runs it
under a wall-clock limit and reads the verdict from the bucket: the
completion marker, written last by the payload, is the only definitive
success signal.
"""

import logging
import shlex
from enum import Enum
from importlib import resources

from snapexport.cloud.base import CloudProvider
from snapexport.cloud.remote import ExecResult, RemoteConnectError, RemoteExecutor
from snapexport.config.schema import DispatchConfig
from snapexport.errors import CloudApiError, RemoteExecutionError, UnreachableError
from snapexport.retry import RetryExhausted, RetryPolicy, retry_call
from snapexport.session.record import SessionStatus, StateRecorder

logger = logging.getLogger(__name__)

REMOTE_PAYLOAD_PATH = "/tmp/snapexport-worker.sh"


class DispatchOutcome(str, Enum):
    COMPLETED_OK = "completed_ok"
    COMPLETED_PARTIAL = "completed_partial"
    TIMED_OUT = "timed_out"


def load_payload(mode: str) -> bytes:
    """Read the packaged worker script for ``mode`` (``archive`` or ``files``)."""
    return resources.files("snapexport.payload").joinpath(f"worker_{mode}.sh").read_bytes()


def build_command(bucket: str, prefix: str, device: str, timeout: int, marker: str = "_OK") -> str:
    """Shell command that runs the payload with its parameters in the environment."""
    params = (
        ("EXPORT_BUCKET", bucket),
        ("EXPORT_PREFIX", prefix),
        ("EXPORT_DEVICE", device),
        ("EXPORT_MARKER", marker),
    )
    env = " ".join(f"{key}={shlex.quote(value)}" for key, value in params)
    return f"{env} timeout {int(timeout)} bash {REMOTE_PAYLOAD_PATH}"


class RemoteWorkDispatcher:
    """
    Runs the payload on a provisioned, attached worker.

    Args:
        provider: Cloud provider (address lookup and marker check)
        executor: Remote executor, not yet connected
        recorder: Recorder of the session
        config: Dispatch settings
        marker: Completion marker object name
    """

    def __init__(
        self,
        provider: CloudProvider,
        executor: RemoteExecutor,
        recorder: StateRecorder,
        config: DispatchConfig,
        marker: str = "_OK",
        sleep=None,
    ):
        self.provider = provider
        self.executor = executor
        self.recorder = recorder
        self.config = config
        self.marker = marker
        self._sleep = sleep

    @property
    def record(self):
        return self.recorder.record

    def wait_until_reachable(self, host: str) -> None:
        policy = RetryPolicy(
            attempts=self.config.reachability_attempts,
            interval=self.config.reachability_interval,
        )
        kwargs = {"sleep": self._sleep} if self._sleep is not None else {}
        logger.info("Wait for SSH on %s", host)
        try:
            retry_call(
                lambda: self.executor.connect(host),
                policy,
                retry_on=(RemoteConnectError,),
                describe=f"ssh {host}",
                **kwargs,
            )
        except RetryExhausted as e:
            raise UnreachableError(
                f"Instance {self.record['instance']} ({host}) not reachable after "
                f"{policy.attempts} attempts: {e.last_error}",
                step="wait_for_ssh",
            ) from e

    def _prefix_key(self, name: str) -> str:
        return f"{self.record['remote_prefix']}/{name}"

    def _judge(self, result: ExecResult) -> DispatchOutcome:
        bucket = self.record["bucket"]
        if result.timed_out:
            logger.warning("Remote payload timed out after %ss", self.config.remote_timeout)
            self.recorder.append(status=SessionStatus.REMOTE_TIMED_OUT, remote_exit=result.exit_status)
            return DispatchOutcome.TIMED_OUT

        try:
            marker_present = self.provider.object_exists(bucket, self._prefix_key(self.marker))
            artifacts = [
                o for o in self.provider.list_objects(bucket, self.record["remote_prefix"])
                if o.name != self._prefix_key(self.marker)
            ]
        except CloudApiError as e:
            self.recorder.append(status=SessionStatus.REMOTE_FAILED, remote_exit=result.exit_status)
            raise RemoteExecutionError(f"Could not inspect gs://{bucket}: {e}", step="check_marker") from e

        if marker_present and result.exit_status == 0:
            logger.info("Remote payload finished; %d artifact(s) in gs://%s/%s",
                        len(artifacts), bucket, self.record["remote_prefix"])
            self.recorder.append(status=SessionStatus.REMOTE_COMPLETED, remote_exit=0)
            return DispatchOutcome.COMPLETED_OK

        if artifacts:
            logger.warning("Remote payload exited %d without a clean finish; %d artifact(s) kept for inspection",
                           result.exit_status, len(artifacts))
            self.recorder.append(status=SessionStatus.REMOTE_PARTIAL, remote_exit=result.exit_status)
            return DispatchOutcome.COMPLETED_PARTIAL

        self.recorder.append(status=SessionStatus.REMOTE_FAILED, remote_exit=result.exit_status)
        tail = result.output.strip().splitlines()[-5:]
        raise RemoteExecutionError(
            f"Remote payload failed (exit {result.exit_status}) and wrote nothing"
            + (":\n  " + "\n  ".join(tail) if tail else ""),
            step="remote_work",
        )

    def dispatch(self) -> DispatchOutcome:
        """
        Run the payload and classify the result.

        Returns:
            DispatchOutcome

        Raises:
            UnreachableError: If SSH never came up
            RemoteExecutionError: If the payload failed without writing anything
        """
        zone, instance = self.record["zone"], self.record["instance"]
        try:
            host = self.provider.instance_address(zone, instance)
        except CloudApiError as e:
            raise UnreachableError(f"No address for {instance}: {e}", step="wait_for_ssh") from e
        self.recorder.append(instance_ip=host)

        self.wait_until_reachable(host)
        try:
            logger.info("Push remote worker (mode: %s)", self.config.mode)
            self.executor.upload(load_payload(self.config.mode), REMOTE_PAYLOAD_PATH)
            command = build_command(
                self.record["bucket"],
                self.record["remote_prefix"],
                self.record["disk"],
                self.config.remote_timeout,
                self.marker,
            )
            # Local limit slightly above the remote one so timeout(1) normally fires first
            result = self.executor.execute(command, timeout=self.config.remote_timeout + 60)
        except RemoteConnectError as e:
            raise UnreachableError(f"Lost connection to {instance}: {e}", step="remote_work") from e
        finally:
            self.executor.close()

        return self._judge(result)
