from implspine.cli.app import app

app()
