"""
Reading tutor - the AI subsystem of a reading application.
"""

from .cli import app

app(prog_name="reading_tutor")
