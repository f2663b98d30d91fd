"""Manifest data models for update packages."""

from typing import Optional
from pydantic import BaseModel, Field, field_validator, model_validator


class PackageFile(BaseModel):
    """File entry in manifest.json.

    Maps one payload member of the ZIP archive to its location inside the
    new deployment directory.
    """

    src: str = Field(
        ...,
        pattern=r"^[^/].*$",
        description="Relative path within ZIP (no leading /)",
    )
    dst: str = Field(
        ...,
        pattern=r"^[^/].*$",
        description="Relative path inside the deployment directory",
    )
    sha512: str = Field(
        ..., pattern=r"^[a-fA-F0-9]{128}$", description="Expected SHA-512 hash"
    )
    mode: Optional[int] = Field(
        None, ge=0, le=0o7777, description="Permission bits applied after extraction"
    )

    @field_validator("src", "dst")
    @classmethod
    def no_directory_traversal(cls, v: str) -> str:
        """Prevent directory traversal attacks in package paths."""
        if ".." in v.split("/"):
            raise ValueError("Package paths must not contain '..'")
        return v


class PackageManifest(BaseModel):
    """Root manifest.json schema."""

    version: Optional[str] = Field(
        None, min_length=1, description="Package version (falls back to CHANGELOG)"
    )
    requires_confirmation: bool = Field(
        False, description="Always ask for confirmation, even with auto-install on"
    )
    install_script: Optional[str] = Field(
        None, description="Deployed file executed after extraction"
    )
    files: list[PackageFile] = Field(..., min_length=1, description="Files to deploy")

    @field_validator("files")
    @classmethod
    def unique_destinations(cls, v: list[PackageFile]) -> list[PackageFile]:
        """Ensure no two entries write the same destination."""
        dsts = [f.dst for f in v]
        if len(dsts) != len(set(dsts)):
            raise ValueError("File destinations must be unique")
        return v

    @model_validator(mode="after")
    def install_script_is_deployed(self) -> "PackageManifest":
        if self.install_script is not None and self.install_script not in {
            f.dst for f in self.files
        }:
            raise ValueError(
                f"install_script {self.install_script} is not a deployed file"
            )
        return self


def extract_version_from_changelog(changelog: str) -> str:
    """Guess the package version from the first lines of a CHANGELOG.

    Recognizes "Version X", "vX" and bare "X.Y.Z" lines.

    Returns:
        Version string, or "unknown" if none of the first 10 lines match
    """
    for line in changelog.splitlines()[:10]:
        if "Version " in line:
            return line.split("Version ", 1)[1].strip()
        stripped = line.strip()
        if stripped.startswith("v") and len(stripped) > 1 and stripped[1].isdigit():
            return stripped[1:].strip()
        if stripped.count(".") == 2 and all(
            c.isalnum() or c == "." for c in stripped
        ):
            return stripped
    return "unknown"
