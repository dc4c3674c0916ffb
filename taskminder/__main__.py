from taskminder.main import run

run()
