from conduit_client.cli import app

app(prog_name="conduit-client")
