from lxcmap.cli import app

app()
