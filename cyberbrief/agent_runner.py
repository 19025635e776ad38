"""
Runs the analysis agent container.

The agent gets a working directory mounted at /workspace containing the
collected articles and its skills, and is expected to leave analysis.json
behind. Failed attempts are retried at a constant interval.
"""

import json
import logging
import os
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .analysis import (
    AnalysisDocument,
    AnalysisError,
    build_error_document,
    load_analysis,
    save_analysis,
)
from .skills import ANALYSIS_FILENAME


logger = logging.getLogger(__name__)


CONTAINER_WORKDIR = "/workspace"
API_KEY_ENV = "ANTHROPIC_API_KEY"

# Output kept in exception messages
STDERR_TAIL_CHARS = 500


class AgentError(Exception):
    """Raised when the agent container fails on every attempt."""
    pass


@dataclass
class AgentRunConfig:
    """How to launch the agent container."""

    image: str
    api_key: Optional[str] = None
    timeout_seconds: int = 900
    max_attempts: int = 3
    retry_interval_seconds: int = 30
    docker_binary: str = "docker"


@dataclass
class AgentRunResult:
    """A successful container run."""

    attempts: int
    stdout: str
    stderr: str
    duration_seconds: float


def build_docker_command(config: AgentRunConfig, workdir: Path, prompt: str) -> list[str]:
    """
    Build the docker command line.

    The API key is forwarded by variable name only, so its value never shows
    up in process listings or logs.
    """
    return [
        config.docker_binary, "run", "--rm",
        "-e", API_KEY_ENV,
        "-v", f"{Path(workdir).resolve()}:{CONTAINER_WORKDIR}",
        "-w", CONTAINER_WORKDIR,
        config.image,
        "claude", "--print", "--dangerously-skip-permissions", prompt,
    ]


def _tail(text: Optional[str]) -> str:
    text = (text or "").strip()
    return text[-STDERR_TAIL_CHARS:]


def _run_once(command: list[str], env: dict, timeout: int) -> subprocess.CompletedProcess:
    """Run one attempt, converting every failure mode into AgentError."""
    try:
        completed = subprocess.run(
            command,
            env=env,
            capture_output=True,
            text=True,
            timeout=timeout,
            check=False,
        )
    except subprocess.TimeoutExpired:
        raise AgentError(f"Agent container timed out after {timeout}s")
    except FileNotFoundError:
        raise AgentError(f"Docker binary not found: {command[0]}")
    except OSError as e:
        raise AgentError(f"Failed to start agent container: {e}")

    if completed.returncode != 0:
        raise AgentError(
            f"Agent container exited with code {completed.returncode}: {_tail(completed.stderr)}"
        )
    return completed


def run_agent(
    config: AgentRunConfig,
    workdir: Path,
    prompt: str,
    trace_logger: Optional[logging.Logger] = None,
) -> AgentRunResult:
    """
    Run the agent container with the configured retry policy.

    Args:
        config: Container settings and retry policy.
        workdir: Host directory mounted as the container working directory.
        prompt: Task prompt for the agent.
        trace_logger: Optional logger receiving full container output.

    Returns:
        AgentRunResult of the first successful attempt.

    Raises:
        AgentError: If every attempt failed.
    """
    command = build_docker_command(config, workdir, prompt)
    env = dict(os.environ)
    if config.api_key:
        env[API_KEY_ENV] = config.api_key

    last_error: Optional[AgentError] = None

    for attempt in range(1, config.max_attempts + 1):
        logger.info(f"Starting agent container {config.image} (attempt {attempt}/{config.max_attempts})")
        start = time.monotonic()

        try:
            completed = _run_once(command, env, config.timeout_seconds)
        except AgentError as e:
            last_error = e
            logger.warning(f"Agent attempt {attempt} failed: {e}")
            if attempt < config.max_attempts:
                time.sleep(config.retry_interval_seconds)
            continue

        duration = time.monotonic() - start
        if trace_logger is not None:
            trace_logger.debug(
                f"IMAGE: {config.image}\nATTEMPT: {attempt}\nDURATION: {duration:.1f}s\n"
                f">>> STDOUT >>>\n{completed.stdout}\n<<< STDERR <<<\n{completed.stderr}"
            )
        logger.info(f"Agent container finished in {duration:.1f}s")
        return AgentRunResult(
            attempts=attempt,
            stdout=completed.stdout,
            stderr=completed.stderr,
            duration_seconds=duration,
        )

    raise AgentError(f"Agent failed after {config.max_attempts} attempt(s): {last_error}")


def collect_agent_output(
    workdir: Path,
    metadata: Optional[dict] = None,
    filename: str = ANALYSIS_FILENAME,
) -> AnalysisDocument:
    """
    Load the agent's analysis.json from its working directory.

    When the file is missing or does not match the schema, an error document
    is written in its place and returned instead.
    """
    path = Path(workdir) / filename

    try:
        return load_analysis(path)
    except AnalysisError as e:
        logger.error(f"Agent output unusable: {e}")
        document = build_error_document(str(e), metadata=metadata)

    if path.exists():
        rejected = path.with_suffix(".rejected.json")
        path.replace(rejected)
        logger.info(f"Kept rejected agent output at {rejected}")

    save_analysis(document, path)
    return document


def write_articles_file(workdir: Path, filename: str, records: list[dict]) -> Path:
    """Write the collected articles for the agent to read."""
    path = Path(workdir) / filename
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(records, indent=2, ensure_ascii=False) + "\n", encoding="utf-8")
    return path
