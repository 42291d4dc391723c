"""Post-export hook: hand the output to an external script."""

from __future__ import annotations

import subprocess
import sys
from pathlib import Path

from datasearches.core.logging import SearchLog, get_logger
from datasearches.core.models import Result

logger = get_logger(__name__)

SPREADSHEET_SUFFIX = ".xlsx"


def hook_command(script: Path, output_folder: Path, table_name: str) -> list[str]:
    """Command line for the hook.

    The four positional arguments are the script, the output folder, the
    primary output file name and the companion spreadsheet file name.
    Python scripts run under the current interpreter.
    """
    spreadsheet = Path(table_name).with_suffix(SPREADSHEET_SUFFIX).name
    args = [str(script), str(output_folder), table_name, spreadsheet]
    if script.suffix.lower() == ".py":
        return [sys.executable, *args]
    return args


def run_post_export_hook(
    script: Path, output_folder: Path, table_name: str, log: SearchLog | None = None
) -> Result[int]:
    """Run the hook and wait for it to exit.

    A non-zero exit code is logged but still returned as a successful Result;
    only failing to start the process is a failure.
    """
    log = log or SearchLog()
    if not script.exists():
        log.error(f"Cannot find script {script}")
        return Result.fail(f"Script not found: {script}")

    command = hook_command(script, output_folder, table_name)
    log.write(f"Running {script.name} for {table_name}")
    try:
        completed = subprocess.run(command, capture_output=True, text=True, check=False)
    except OSError as e:
        log.error(f"Cannot start {script}: {e}")
        return Result.fail(f"Failed to start {script}: {e}")

    if completed.returncode != 0:
        log.warning(f"{script.name} exited with code {completed.returncode}")
        if completed.stderr:
            logger.warning("hook_stderr", script=str(script), stderr=completed.stderr.strip())
    return Result.ok(completed.returncode)
