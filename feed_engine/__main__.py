from feed_engine.cli.app import app

app()
