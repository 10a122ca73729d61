"""Data models for APK repository structures."""

from pydantic import BaseModel, ConfigDict, Field, computed_field


class Package(BaseModel):
    """Represents one package entry of an APKINDEX."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(min_length=1)
    version: str = Field(min_length=1)
    arch: str | None = None
    checksum: str | None = None
    size: int | None = None
    installed_size: int | None = None
    description: str | None = None
    url: str | None = None
    license: str | None = None
    origin: str | None = None
    maintainer: str | None = None
    build_time: int | None = None
    repo_commit: str | None = None
    provider_priority: int | None = None
    dependencies: tuple[str, ...] = ()
    provides: tuple[str, ...] = ()
    install_if: tuple[str, ...] = ()
    replaces: tuple[str, ...] = ()
    replaces_priority: int | None = None

    @computed_field
    @property
    def filename(self) -> str:
        """Artifact file name, also used as the identity key on disk."""
        return f"{self.name}-{self.version}.apk"
