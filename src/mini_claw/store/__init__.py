from mini_claw.store.workspace_store import WorkspaceStore, format_path

__all__ = ["WorkspaceStore", "format_path"]
