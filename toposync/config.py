"""Topology sync configuration."""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Sync engine settings loaded from environment variables."""

    # Logging
    log_level: str = "INFO"
    log_format: str = "text"  # text or json

    # Annotation sidecar
    annotations_suffix: str = ".annotations.json"
    annotation_json_indent: int = 2

    # Node defaults
    default_node_kind: str = "nokia_srlinux"  # Used for editor-created nodes
    container_prefix_default: str = "clab"  # Used when the document has no prefix

    # Round-trip YAML emitter layout
    yaml_indent: int = 2
    yaml_sequence_indent: int = 4
    yaml_sequence_offset: int = 2

    class Config:
        env_prefix = "TOPOSYNC_"


settings = Settings()
