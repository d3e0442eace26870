"""Centralize running of external commands, providing logging and tracking.
"""
import collections
import os
import subprocess
import threading

from seqflow import utils
from seqflow.log import logger, logger_cl, logger_stdout


class CommandCancelled(Exception):
    pass

def run(cmd, descr=None, checks=None, log_error=True, log_stdout=False, env=None, cancel=None):
    """Run the provided command, logging details and checking for errors.

    cancel -- Optional threading.Event. When set while the command runs, the
      process is terminated and CommandCancelled raised.
    """
    if descr:
        logger.debug(descr)
    try:
        logger_cl.debug(" ".join(str(x) for x in cmd) if not isinstance(cmd, str) else cmd)
        _do_run(cmd, checks, log_stdout, env=env, cancel=cancel)
    except CommandCancelled:
        logger.info("Cancelled: %s" % (descr or cmd))
        raise
    except Exception:
        if log_error:
            logger.exception("Command failed: %s" % (descr or cmd))
        raise

def find_bash():
    for test_bash in [find_cmd("bash"), "/bin/bash", "/usr/bin/bash", "/usr/local/bin/bash"]:
        if test_bash and os.path.exists(test_bash):
            return test_bash
    raise IOError("Could not find bash in any standard location. Needed for unix pipes")

def find_cmd(cmd):
    try:
        return subprocess.check_output(["which", cmd]).decode().strip()
    except subprocess.CalledProcessError:
        return None

def _normalize_cmd_args(cmd):
    """Normalize subprocess arguments to handle list commands, string and pipes.
    Piped commands set pipefail and require use of bash to help with debugging
    intermediate errors.
    """
    if isinstance(cmd, str):
        # check for standard or anonymous named pipes
        if cmd.find(" | ") > 0 or cmd.find(">(") > 0 or cmd.find("<(") > 0:
            return "set -o pipefail; " + cmd, True, find_bash()
        else:
            return cmd, True, None
    else:
        return [str(x) for x in cmd], False, None

def _watch_cancel(proc, cancel, finished):
    """Terminate the process if cancellation arrives before it finishes.
    """
    while not finished.is_set():
        if cancel.wait(1.0):
            if proc.poll() is None:
                proc.terminate()
            return

def _do_run(cmd, checks, log_stdout=False, env=None, cancel=None):
    """Perform running and check results, raising errors for issues.
    """
    cmd, shell_arg, executable_arg = _normalize_cmd_args(cmd)
    s = subprocess.Popen(
        cmd,
        shell=shell_arg,
        executable=executable_arg,
        stdout=subprocess.PIPE,
        stderr=subprocess.STDOUT,
        close_fds=True,
        env=env,
    )
    finished = threading.Event()
    if cancel is not None:
        watcher = threading.Thread(target=_watch_cancel, args=(s, cancel, finished))
        watcher.daemon = True
        watcher.start()
    debug_stdout = collections.deque(maxlen=100)
    try:
        while 1:
            line = s.stdout.readline().decode("utf-8", errors="replace")
            if line.rstrip():
                debug_stdout.append(line)
                if log_stdout:
                    logger_stdout.debug(line.rstrip())
                else:
                    logger.debug(line.rstrip())
            exitcode = s.poll()
            if exitcode is not None:
                for line in s.stdout:
                    debug_stdout.append(line.decode("utf-8", errors="replace"))
                if cancel is not None and cancel.is_set():
                    raise CommandCancelled(" ".join(cmd) if not isinstance(cmd, str) else cmd)
                if exitcode != 0:
                    error_msg = " ".join(cmd) if not isinstance(cmd, str) else cmd
                    error_msg += "\n"
                    error_msg += "".join(debug_stdout)
                    raise subprocess.CalledProcessError(exitcode, error_msg)
                else:
                    break
    finally:
        finished.set()
        s.communicate()
        s.stdout.close()
    # Check for problems not identified by shell return codes
    if checks:
        for check in checks:
            if not check():
                raise IOError("External command failed")

# checks for validating run completed successfully

def file_nonempty(target_file):
    def check():
        ok = utils.file_exists(target_file)
        if not ok:
            logger.info("Did not find non-empty output file {0}".format(target_file))
        return ok
    return check
