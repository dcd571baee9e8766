"""Models of a generated full-stack project descriptor.

The descriptor arrives as camelCase JSON; fields accept both the JSON
names and their snake_case attribute names.
"""

import json
from pathlib import Path
from typing import Any, Dict, List, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .errors import ConfigurationError


class _Model(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class ProjectFile(_Model):
    purpose: str = ""
    code: str = ""

    @field_validator("code", mode="before")
    @classmethod
    def _code_as_text(cls, value: Any) -> str:
        # dependency files such as package.json are sometimes emitted as objects
        if isinstance(value, (dict, list)):
            return json.dumps(value, indent=2)
        return "" if value is None else str(value)


class FrontendStructure(_Model):
    framework: Literal["react", "next"] = "next"
    files: Dict[str, ProjectFile] = Field(default_factory=dict)
    dependencies: Dict[str, ProjectFile] = Field(default_factory=dict)


class BackendStructure(_Model):
    framework: Literal["fastapi"] = "fastapi"
    files: Dict[str, ProjectFile] = Field(default_factory=dict)
    dependencies: Dict[str, ProjectFile] = Field(default_factory=dict)


class ProjectCode(_Model):
    frontend: FrontendStructure = Field(default_factory=FrontendStructure)
    backend: BackendStructure = Field(default_factory=BackendStructure)


class DatabaseCollection(_Model):
    name: str
    purpose: str = ""
    schema_: Dict[str, Any] = Field(default_factory=dict, alias="schema")


class DatabaseSchema(_Model):
    collections: List[DatabaseCollection] = Field(default_factory=list)


class ApiEndpoint(_Model):
    method: str
    path: str
    purpose: str = ""


class ProjectStructure(_Model):
    frontend: str = ""
    backend: str = ""


class FullStackProject(_Model):
    project_name: str = Field(alias="projectName")
    project_description: str = Field(default="", alias="projectDescription")
    template: Literal["next+fastapi+mongodb", "react+fastapi+mongodb"] = "next+fastapi+mongodb"
    code: ProjectCode = Field(default_factory=ProjectCode)
    project_structure: ProjectStructure = Field(default_factory=ProjectStructure, alias="projectStructure")
    database_schema: DatabaseSchema = Field(default_factory=DatabaseSchema, alias="databaseSchema")
    api_endpoints: List[ApiEndpoint] = Field(default_factory=list, alias="apiEndpoints")

    @property
    def uses_mongodb(self) -> bool:
        return "mongodb" in self.template

    def backend_files(self) -> Dict[str, str]:
        """Backend source plus dependency files, relative path -> content."""
        backend = self.code.backend
        return {**_contents(backend.files), **_contents(backend.dependencies)}

    def frontend_files(self) -> Dict[str, str]:
        frontend = self.code.frontend
        return {**_contents(frontend.files), **_contents(frontend.dependencies)}


def _contents(files: Dict[str, ProjectFile]) -> Dict[str, str]:
    return {path.lstrip("/"): f.code for path, f in files.items()}


def load_project(source: Union[str, Path, dict]) -> FullStackProject:
    """Parse a descriptor from a dict, a JSON string or a JSON file path."""
    try:
        if isinstance(source, dict):
            return FullStackProject.model_validate(source)
        if isinstance(source, Path) or (isinstance(source, str) and not source.lstrip().startswith("{")):
            path = Path(source)
            if not path.exists():
                raise ConfigurationError(f"Project file not found: {path}")
            source = path.read_text(encoding="utf-8")
        return FullStackProject.model_validate_json(source)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid project descriptor: {e}") from e
