from sql_lookup.cli.app import app

app()
