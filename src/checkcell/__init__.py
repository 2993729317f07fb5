"""CheckCell - statistical localization of suspicious spreadsheet inputs."""

__version__ = "0.1.0"
