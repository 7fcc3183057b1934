"""
End-to-end export session.

plan → provision → dispatch → compute teardown → download → storage teardown.

Provisioning and dispatch run under a single handler: any error, Ctrl-C or
SIGTERM appends ``failed`` to the record and tears down whatever the record
references (storage is always kept in that case), once, before the error
propagates. After remote work, compute is released right away and storage
is only released after a verified download.
"""

import contextlib
import logging
import signal
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Iterator, List, Optional

from snapexport.cloud.base import CloudProvider, SnapshotInfo
from snapexport.cloud.remote import ParamikoExecutor, RemoteExecutor, generate_session_key
from snapexport.config.schema import ExportConfig
from snapexport.errors import (
    CloudApiError,
    RemoteExecutionError,
    SessionInterrupted,
    SnapexportError,
    TransferFailed,
)
from snapexport.session.planner import plan_session
from snapexport.session.record import SessionRecord, SessionStatus, StateRecorder
from snapexport.session.store import forget_session, link_alias
from .dispatcher import DispatchOutcome, RemoteWorkDispatcher
from .provisioner import ResourceProvisioner
from .teardown import TeardownReport, teardown
from .transfer import (
    CopyMechanism,
    TransferDescriptor,
    TransferOutcome,
    TransferResult,
    TransferSynchronizer,
    build_mechanisms,
    fetch_single,
)

logger = logging.getLogger(__name__)

ExecutorFactory = Callable[[str, Path], RemoteExecutor]
ConfirmCallback = Callable[[SessionRecord, Optional[SnapshotInfo]], bool]


@dataclass
class ExportRequest:
    snapshot: str
    region: str
    alias: Optional[str] = None
    out_dir: Optional[Path] = None
    keep_remote: bool = False
    skip_local: bool = False


@dataclass
class ExportReport:
    record: SessionRecord
    outcome: Optional[DispatchOutcome] = None
    transfer: Optional[TransferResult] = None
    teardowns: List[TeardownReport] = field(default_factory=list)
    aborted: bool = False

    @property
    def compute_leaked(self) -> bool:
        """Compute teardown reported errors; the worker or disk may still exist."""
        return any(not t.compute_clean for t in self.teardowns)

    @property
    def exit_code(self) -> int:
        if self.compute_leaked:
            return SnapexportError.exit_code
        if self.transfer is not None and self.transfer.outcome == TransferOutcome.FAILED:
            return TransferFailed.exit_code
        return 0

    @property
    def succeeded(self) -> bool:
        """Verified local copy exists and compute is gone."""
        return (
            self.outcome == DispatchOutcome.COMPLETED_OK
            and self.transfer is not None
            and self.transfer.outcome == TransferOutcome.COMPLETED
            and not self.compute_leaked
        )


@contextlib.contextmanager
def interrupt_guard() -> Iterator[None]:
    """Turn SIGTERM into SessionInterrupted while a session is running."""
    if threading.current_thread() is not threading.main_thread():
        yield
        return

    def handler(signum, frame):
        raise SessionInterrupted(f"Received signal {signum}", step="interrupted")

    previous = signal.signal(signal.SIGTERM, handler)
    try:
        yield
    finally:
        signal.signal(signal.SIGTERM, previous)


class ExportOrchestrator:
    """
    Drives export sessions and their standalone follow-ups.

    Args:
        provider: Cloud provider bound to the session project
        config: Export configuration
        executor_factory: Builds a RemoteExecutor from (ssh user, key path)
        confirm: Asked before anything is created; False aborts the session
        mechanisms: Copy mechanisms (default: built from config)
        sleep: Sleep override for reachability polling (tests)
    """

    def __init__(
        self,
        provider: CloudProvider,
        config: ExportConfig,
        executor_factory: Optional[ExecutorFactory] = None,
        confirm: Optional[ConfirmCallback] = None,
        mechanisms: Optional[List[CopyMechanism]] = None,
        sleep=None,
    ):
        self.provider = provider
        self.config = config
        self.executor_factory = executor_factory or self._paramiko_executor
        self.confirm = confirm
        self.mechanisms = mechanisms
        self._sleep = sleep

    def _paramiko_executor(self, username: str, key_path: Path) -> RemoteExecutor:
        return ParamikoExecutor(username, key_path, connect_timeout=self.config.dispatch.connect_timeout)

    def _synchronizer(self) -> TransferSynchronizer:
        mechanisms = self.mechanisms or build_mechanisms(
            self.config.transfer.mechanisms, self.provider, self.config.transfer.verify_checksums
        )
        return TransferSynchronizer(mechanisms)

    # ------------------------------------------------------------------
    # Full session
    # ------------------------------------------------------------------

    def plan(self, request: ExportRequest) -> StateRecorder:
        return plan_session(
            request.snapshot,
            request.region,
            self.provider.project,
            exports_dir=self.config.state.exports_dir,
            alias=request.alias,
            out_dir=request.out_dir,
            keep_remote=request.keep_remote,
            skip_local=request.skip_local,
        )

    def _describe_snapshot(self, snapshot: str) -> Optional[SnapshotInfo]:
        try:
            return self.provider.describe_snapshot(snapshot)
        except CloudApiError as e:
            logger.warning("Could not describe snapshot %s: %s", snapshot, e)
            return None

    def run(self, request: ExportRequest) -> ExportReport:
        """
        Run a full export session.

        Raises:
            ConfigurationError: Before anything was created
            NoAvailableZoneError, ProvisioningError, UnreachableError,
            RemoteExecutionError, SessionInterrupted: After teardown ran
        """
        recorder = self.plan(request)
        record = recorder.record
        report = ExportReport(record=record)

        info = self._describe_snapshot(request.snapshot)
        if info is not None:
            logger.info("Snapshot: %s | disk %s GB", info.name, info.disk_size_gb)
        if self.confirm is not None and not self.confirm(record, info):
            # Nothing exists remotely yet, so nothing is worth remembering
            forget_session(record, self.config.state.exports_dir)
            local_dir = Path(record["local_dir"])
            if local_dir.is_dir() and not any(local_dir.iterdir()):
                local_dir.rmdir()
            report.aborted = True
            return report

        with interrupt_guard():
            try:
                key_path = record.state_file.with_suffix(".key")
                public_key = generate_session_key(key_path)
                recorder.append(ssh_key=key_path)

                provisioner = ResourceProvisioner(self.provider, recorder, self.config.gce)
                provisioner.provision(
                    self.config.gce.machine_types, self.config.gce.disk_type, public_key
                )
                link_alias(record, self.config.state.exports_dir)

                dispatcher = RemoteWorkDispatcher(
                    self.provider,
                    self.executor_factory(self.config.gce.ssh_user, key_path),
                    recorder,
                    self.config.dispatch,
                    marker=self.config.transfer.marker,
                    sleep=self._sleep,
                )
                report.outcome = dispatcher.dispatch()
            except BaseException as e:
                report.teardowns.append(self._abort(recorder, e))
                raise

            # Compute goes right after remote work, whatever happens next
            try:
                compute = self._release_compute(recorder)
            except BaseException as e:
                report.teardowns.append(self._abort(recorder, e))
                raise
            report.teardowns.append(compute)

            if report.outcome != DispatchOutcome.COMPLETED_OK:
                raise RemoteExecutionError(
                    f"Remote work ended as {report.outcome.value}; artifacts kept in "
                    f"gs://{record['bucket']}/{record['remote_prefix']}",
                    step="remote_work",
                    record_path=record.state_file,
                )

            if record.skip_local:
                logger.info("Skip local download. Artifacts: gs://%s/%s", record["bucket"], record["remote_prefix"])
                recorder.append(status=SessionStatus.DOWNLOAD_SKIPPED)
            else:
                report.transfer = self._download(recorder)

            storage = teardown(self.provider, record, include_compute=False)
            report.teardowns.append(storage)
            if not storage.storage_kept:
                recorder.append(status=SessionStatus.STORAGE_RELEASED)
            return report

    def _download(self, recorder: StateRecorder) -> TransferResult:
        descriptor = TransferDescriptor.from_record(recorder.record, marker=self.config.transfer.marker)
        result = self._synchronizer().sync(descriptor)
        status = {
            TransferOutcome.COMPLETED: SessionStatus.DOWNLOADED,
            TransferOutcome.COMPLETED_WITH_WARNING: SessionStatus.DOWNLOAD_WARNING,
            TransferOutcome.FAILED: SessionStatus.DOWNLOAD_FAILED,
        }[result.outcome]
        recorder.append(status=status, transfer_mechanism=result.mechanism or "")
        return result

    def _release_compute(self, recorder: StateRecorder) -> TeardownReport:
        """Delete the worker and the disk; a failure is recorded so storage is kept."""
        logger.info("Cleanup compute… (post-upload)")
        compute = teardown(self.provider, recorder.record, include_compute=True, include_storage=False)
        if compute.compute_clean:
            recorder.append(status=SessionStatus.COMPUTE_RELEASED)
            return compute

        failures = "; ".join(f"{e.step} {e.resource}: {e.error}" for e in compute.errors)
        logger.error("Compute still running after cleanup (%s); keeping storage. "
                     "Run 'snapexport cleanup --include-compute %s'", failures, recorder.path)
        recorder.append(status=SessionStatus.FAILED, error=f"teardown_compute: {failures}")
        return compute

    def _abort(self, recorder: StateRecorder, error: BaseException) -> TeardownReport:
        """Record the failure and tear compute down from the record. Storage is kept."""
        step = getattr(error, "step", None) or type(error).__name__
        logger.error("Something failed at step '%s' (%s); running cleanup using %s",
                     step, error, recorder.path)
        try:
            recorder.append(status=SessionStatus.FAILED, error=f"{step}: {error}")
        except OSError as e:
            logger.error("Could not append failure to %s: %s", recorder.path, e)
        if isinstance(error, SnapexportError) and error.record_path is None:
            error.record_path = recorder.path
        return teardown(self.provider, recorder.record, include_compute=True, include_storage=False)

    # ------------------------------------------------------------------
    # Follow-ups from a recovered record
    # ------------------------------------------------------------------

    def download(self, record: SessionRecord, out_dir: Optional[Path] = None,
                 only: Optional[str] = None) -> TransferResult:
        """
        Resume or repeat the download of a prior session. The record is not modified.

        Raises:
            ConfigurationError: If the session's remote work never completed
        """
        descriptor = TransferDescriptor.from_record(record, out_dir, marker=self.config.transfer.marker)
        if only:
            dest = fetch_single(self.provider, descriptor, only)
            logger.info("Download complete: %s", dest)
            return TransferResult(TransferOutcome.COMPLETED, "api", 0, marker_present=False)
        return self._synchronizer().sync(descriptor)

    def cleanup(self, record: SessionRecord, include_compute: bool = False,
                keep_storage: bool = False) -> TeardownReport:
        """Explicit teardown from a recovered record; storage is deleted unless kept."""
        logger.info("Cleanup using state: %s", record.state_file)
        logger.info("%s", record.describe())
        return teardown(
            self.provider,
            record,
            include_compute=include_compute,
            include_storage=not keep_storage,
            force_storage=not keep_storage,
        )
