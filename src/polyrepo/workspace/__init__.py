"""Workspace module: the repos of a multi-repo checkout and their relationships."""

from .config import (
    DEFAULT_ARTIFACT_DIR,
    WORKSPACE_FILE,
    ImplicitEdge,
    RepoDef,
    SiblingLink,
    Workspace,
    find_workspace_root,
    init_workspace,
    load_workspace,
    save_workspace,
)
from .env import (
    generate_editor_workspace,
    global_env_path,
    read_global_env,
    workspace_env,
    write_global_env,
)

__all__ = [
    # Data classes
    "RepoDef",
    "ImplicitEdge",
    "SiblingLink",
    "Workspace",
    # Constants
    "WORKSPACE_FILE",
    "DEFAULT_ARTIFACT_DIR",
    # Persistence
    "find_workspace_root",
    "load_workspace",
    "save_workspace",
    "init_workspace",
    # Environment
    "global_env_path",
    "read_global_env",
    "write_global_env",
    "workspace_env",
    "generate_editor_workspace",
]
