"""Process-wide infrastructure shared by the CLI and library entry points."""
