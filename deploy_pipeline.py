import asyncio
import logging
import os
import shlex
import signal
import subprocess
import sys
import threading
import time
from contextlib import asynccontextmanager, contextmanager
from typing import Dict, List, NamedTuple, Optional, Set

from config import Settings
from models.deployment import DeploymentOutcome
from models.repo_config import RepoConfig

logger = logging.getLogger(__name__)

POLL_INTERVAL = 0.2  # seconds between timeout/cancel checks
KILL_GRACE_PERIOD = 5  # seconds between SIGTERM and SIGKILL


class PipelineResult(NamedTuple):
    returncode: Optional[int]
    stdout: str
    stderr: str
    timed_out: bool = False
    cancelled: bool = False


def build_deploy_command(repo_path: str, settings: Settings) -> str:
    """
    Assemble the fixed deployment recipe as one shell line:
      1) pull the latest source in the repository checkout
      2) validate and rebuild the compose project in the parent directory
      3) wait, then require at least one running container.
    """
    compose = settings.compose_command
    steps = [
        f"cd {shlex.quote(repo_path)}",
        "git pull",
        "cd ..",
        f'({compose} config -q || (echo "Invalid compose configuration" && exit 1))',
        f"{compose} up -d --build",
    ]
    if settings.verify_delay > 0:
        steps.append(f"sleep {settings.verify_delay}")
    steps.append(
        f'({compose} ps --status running --quiet | grep -q . '
        f'|| (echo "Deployment verification failed" && exit 1))'
    )
    return " && ".join(steps)


def _pump(stream, sink, chunks: List[str]):
    """Copy a child pipe line by line to our own stream while keeping a copy."""
    for raw in iter(stream.readline, b""):
        line = raw.decode("utf-8", errors="replace")
        chunks.append(line)
        sink.write(line)
        sink.flush()
    stream.close()


def _pipeline_running(proc: subprocess.Popen, readers: List[threading.Thread]) -> bool:
    # Background children keep the pipes open after the shell itself exits
    return proc.poll() is None or any(reader.is_alive() for reader in readers)


def _wait_briefly(proc: subprocess.Popen, readers: List[threading.Thread]):
    if proc.poll() is None:
        try:
            proc.wait(timeout=POLL_INTERVAL)
        except subprocess.TimeoutExpired:
            pass
        return
    for reader in readers:
        reader.join(POLL_INTERVAL / len(readers))


def _kill_process_group(proc: subprocess.Popen, readers: List[threading.Thread]):
    """SIGTERM the whole group, then SIGKILL whatever is left after the grace period."""
    try:
        os.killpg(proc.pid, signal.SIGTERM)
    except ProcessLookupError:
        return
    grace_deadline = time.monotonic() + KILL_GRACE_PERIOD
    while _pipeline_running(proc, readers) and time.monotonic() < grace_deadline:
        _wait_briefly(proc, readers)
    if _pipeline_running(proc, readers):
        logger.warning(f"Deployment process group {proc.pid} ignored SIGTERM. Sending SIGKILL.")
    try:
        os.killpg(proc.pid, signal.SIGKILL)
    except ProcessLookupError:
        pass


def run_pipeline(command: str, timeout: Optional[float] = None,
                 cancel_event: Optional[threading.Event] = None,
                 env: Optional[Dict[str, str]] = None, cwd: Optional[str] = None,
                 stdout_sink=None, stderr_sink=None) -> PipelineResult:
    """
    Run a shell command line in its own process group.

    Output is forwarded live to this process's stdout/stderr and captured. The
    pipeline ends when the shell has exited and every process holding its output
    has closed it. When the timeout expires or cancel_event is set first, the whole
    process group is terminated, including children left running in the background.
    Raises OSError if the shell cannot be started.
    """
    stdout_sink = stdout_sink or sys.stdout
    stderr_sink = stderr_sink or sys.stderr

    proc = subprocess.Popen(
        ["sh", "-c", command],
        cwd=cwd,
        env=env,
        stdin=subprocess.DEVNULL,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        start_new_session=True,
    )

    out_chunks: List[str] = []
    err_chunks: List[str] = []
    readers = [
        threading.Thread(target=_pump, args=(proc.stdout, stdout_sink, out_chunks), daemon=True),
        threading.Thread(target=_pump, args=(proc.stderr, stderr_sink, err_chunks), daemon=True),
    ]
    for reader in readers:
        reader.start()

    deadline = time.monotonic() + timeout if timeout else None
    timed_out = False
    cancelled = False
    lingering_logged = False

    while _pipeline_running(proc, readers):
        if cancel_event is not None and cancel_event.is_set():
            logger.warning(f"Cancelling deployment process {proc.pid}.")
            cancelled = True
            _kill_process_group(proc, readers)
            break
        if deadline is not None and time.monotonic() >= deadline:
            logger.error(f"Deployment process {proc.pid} exceeded the {timeout}s timeout. Terminating.")
            timed_out = True
            _kill_process_group(proc, readers)
            break
        if proc.poll() is not None and not lingering_logged:
            logger.info(f"Deployment shell {proc.pid} exited. Waiting for background processes holding its output.")
            lingering_logged = True
        _wait_briefly(proc, readers)

    returncode = proc.wait()
    for reader in readers:
        reader.join(KILL_GRACE_PERIOD)
    if any(reader.is_alive() for reader in readers):
        logger.warning(f"Output of deployment process {proc.pid} is still held open outside its process group.")

    return PipelineResult(
        returncode=returncode,
        stdout="".join(out_chunks),
        stderr="".join(err_chunks),
        timed_out=timed_out,
        cancelled=cancelled,
    )


class DeploymentTracker:
    """
    Serializes deployments per repository. A second push for a repository that is
    already deploying waits for the running pipeline to finish.

    Request handlers wait their turn in queued() on the event loop, so a push stuck
    behind a long deployment does not hold an executor thread. claim() marks the
    deployment as in flight and still serializes direct callers of Deployer.deploy.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._repo_locks: Dict[str, threading.Lock] = {}
        self._queues: Dict[str, asyncio.Lock] = {}
        self._in_flight: Set[str] = set()

    def _lock_for(self, repo_name: str) -> threading.Lock:
        with self._guard:
            return self._repo_locks.setdefault(repo_name, threading.Lock())

    @asynccontextmanager
    async def queued(self, repo_name: str):
        # Only touched from the event loop thread
        if repo_name not in self._queues:
            self._queues[repo_name] = asyncio.Lock()
        queue = self._queues[repo_name]
        if queue.locked():
            logger.info(f"Deployment for {repo_name} already in progress. Queued behind it.")
        async with queue:
            yield

    @contextmanager
    def claim(self, repo_name: str):
        lock = self._lock_for(repo_name)
        if not lock.acquire(blocking=False):
            logger.info(f"Deployment for {repo_name} already in progress. Waiting for it to finish.")
            lock.acquire()
        with self._guard:
            self._in_flight.add(repo_name)
        try:
            yield
        finally:
            with self._guard:
                self._in_flight.discard(repo_name)
            lock.release()

    def is_deploying(self, repo_name: str) -> bool:
        with self._guard:
            return repo_name in self._in_flight

    def in_flight(self) -> List[str]:
        with self._guard:
            return sorted(self._in_flight)


class Deployer:
    def __init__(self, settings: Settings, tracker: Optional[DeploymentTracker] = None):
        self.settings = settings
        self.tracker = tracker or DeploymentTracker()
        self._shutdown = threading.Event()

    def deploy(self, repo_name: str, repo_config: RepoConfig) -> DeploymentOutcome:
        """Run the deployment recipe for one repository and block until it finishes."""
        command = build_deploy_command(repo_config.path, self.settings)
        env = dict(os.environ, DEPLOYMENT_VERSION=str(int(time.time() * 1000)))
        timeout = self.settings.deploy_timeout or None

        with self.tracker.claim(repo_name):
            logger.info(f"Executing deployment command for {repo_name}: {command}")
            try:
                result = run_pipeline(command, timeout=timeout, cancel_event=self._shutdown, env=env)
            except OSError as e:
                logger.error(f"Failed to execute deployment command for {repo_name}: {e}", exc_info=True)
                return DeploymentOutcome(
                    repo_name=repo_name,
                    path=repo_config.path,
                    success=False,
                    error=f"Failed to execute command: {e}",
                )

        outcome = DeploymentOutcome(
            repo_name=repo_name,
            path=repo_config.path,
            success=result.returncode == 0 and not result.timed_out and not result.cancelled,
            exit_code=result.returncode,
            stdout=result.stdout,
            stderr=result.stderr,
            timed_out=result.timed_out,
            cancelled=result.cancelled,
        )
        if outcome.success:
            logger.info(outcome.message)
        else:
            logger.error(f"Deployment error for {repo_name}: {outcome.message}")
        return outcome

    def shutdown(self):
        """Terminate running pipelines; used when the application stops."""
        self._shutdown.set()
