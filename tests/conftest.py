import os
import sys


def pytest_sessionstart(session):
    """Let ``python -m displacer`` subprocesses find the running interpreter."""

    bin_dir = os.path.dirname(sys.executable)
    path = os.environ.get("PATH", "")
    if bin_dir and bin_dir not in path.split(os.pathsep):
        os.environ["PATH"] = os.pathsep.join([bin_dir, path]) if path else bin_dir
