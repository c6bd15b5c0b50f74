"""Explorer configuration passed explicitly into each component."""

from collections.abc import Sequence

from pydantic import Field

from k6_test_explorer.models.base import Model


class ExplorerConfig(Model):
    """Options consumed by discovery, watching and engine invocation."""

    test_file_pattern: str = Field(
        default="**/*.test.{js,ts}",
        description="Glob selecting test files, relative to a workspace root",
    )
    exclude_pattern: str = Field(
        default="**/node_modules/**",
        description="Glob of paths never scanned for tests",
    )
    engine_executable_path: str = Field(
        default="k6",
        description="k6 executable, bare names are resolved through PATH",
    )
    default_engine_args: Sequence[str] = Field(
        default_factory=tuple,
        description="Extra arguments inserted after the run subcommand",
    )
    secrets_file_path: str | None = Field(
        default=None,
        description="Secrets file passed as --secret-source=file=<path>",
    )
