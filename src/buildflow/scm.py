# scm.py
# Small wrapper around the Git CLI used to prepare a job workspace.
# The rest of the codebase never calls subprocess("git ...") directly.

from __future__ import annotations

import os
import re
import subprocess
from pathlib import Path
from typing import Dict, List, Optional

from .model import GitSCM
from .ui.console import get_console


def _git(args: list[str], cwd: Optional[Path] = None, env: Optional[Dict[str, str]] = None) -> str:
    """
    Execute a git command and return its stdout as a clean string.

    Raises subprocess.CalledProcessError on a non-zero exit.
    """
    out = subprocess.check_output(
        ["git", *args],
        cwd=str(cwd) if cwd else None,
        env=env,
        text=True,
        stderr=subprocess.PIPE,
    )
    return out.strip()


def credentials_env(credentials_id: str, environ: Optional[Dict[str, str]] = None) -> Dict[str, str]:
    """
    Environment for git with the SSH key registered under `credentials_id`.

    Keys are looked up from BUILDFLOW_CREDENTIALS_<ID> (id upper-cased, every
    non-alphanumeric character replaced by '_'), holding a private key path.
    Without such a variable git runs with the caller's own SSH setup.
    """
    env = dict(os.environ if environ is None else environ)
    var = "BUILDFLOW_CREDENTIALS_" + re.sub(r"[^A-Za-z0-9]", "_", credentials_id).upper()
    key_path = env.get(var)
    if key_path:
        env["GIT_SSH_COMMAND"] = f"ssh -i {key_path} -o IdentitiesOnly=yes"
    return env


def checkout_commands(scm: GitSCM, workspace: Path) -> List[List[str]]:
    """The git invocations `checkout` will run, in order."""
    cmds: List[List[str]] = []
    if not (workspace / ".git").exists():
        cmds.append(["init", "-q"])
        cmds.append(["remote", "add", scm.remote, scm.url])
    else:
        cmds.append(["remote", "set-url", scm.remote, scm.url])
    cmds.append(["fetch", "--prune", scm.remote, scm.branch])
    cmds.append(["checkout", "-q", "-f", "-B", scm.branch, f"{scm.remote}/{scm.branch}"])
    if scm.clean_before_checkout:
        cmds.append(["clean", "-fdx"])
    return cmds


def checkout(scm: GitSCM, workspace: str | Path) -> bool:
    """
    Bring `workspace` to the tip of `scm.branch`.

    Returns True on success and False on any git failure; the reason is
    printed to the console.
    """
    ws = Path(workspace)
    ws.mkdir(parents=True, exist_ok=True)
    env = credentials_env(scm.credentials_id)
    console = get_console()

    try:
        for args in checkout_commands(scm, ws):
            console.print_debug(f"git {' '.join(args)}")
            _git(args, cwd=ws, env=env)
    except subprocess.CalledProcessError as e:
        console.print_info(f"SCM: git {e.cmd[1] if len(e.cmd) > 1 else ''} failed: {(e.stderr or '').strip()}")
        return False
    except FileNotFoundError:
        console.print_info("SCM: git command not found. Please install Git.")
        return False
    return True


def head_sha(workspace: str | Path) -> str:
    """Full SHA of HEAD in `workspace`."""
    return _git(["rev-parse", "HEAD"], cwd=Path(workspace))
