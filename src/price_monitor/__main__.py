from price_monitor.cli import app

app()
