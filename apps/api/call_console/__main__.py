from call_console.main import run

run()
