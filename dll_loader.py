"""
Process-wide loading of the Thorlabs .NET assemblies through pythonnet.

Every assembly is referenced at most once per process, whichever wrapper
asks for it first. The namespaces become importable after that.
"""
import importlib
import logging
import os
import sys
import threading

from errors import DllLoadError

_logger = logging.getLogger(__name__)

_lock = threading.Lock()
_loaded = set()


def load_assemblies(directory, dll_names):
    """Reference the given DLLs from `directory` unless already loaded."""
    with _lock:
        pending = [os.path.join(directory, name) for name in dll_names]
        pending = [path for path in pending if path not in _loaded]
        if not pending:
            return

        # Dependent assemblies are resolved from the same folder
        if directory not in sys.path:
            sys.path.append(directory)
        if directory not in os.environ.get("PATH", "").split(os.pathsep):
            os.environ["PATH"] = os.environ.get("PATH", "") + os.pathsep + directory

        try:
            import clr
        except Exception as e:
            raise DllLoadError(f"Unable to start the .NET runtime through pythonnet: {e}") from e

        for path in pending:
            try:
                clr.AddReference(path)
            except Exception as e:
                raise DllLoadError(f"Unable to load .NET assembly {os.path.basename(path)} from the folder {directory}") from e
            _loaded.add(path)
            _logger.debug(f"Loaded .NET assembly {path}")


def import_namespace(name):
    """Import a .NET namespace (e.g. 'System' or 'Thorlabs.WFS.Interop64')."""
    return importlib.import_module(name)


def loaded_assemblies():
    with _lock:
        return sorted(_loaded)
