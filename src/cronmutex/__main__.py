from cronmutex.cli import app

app()
