import typer
import requests
import os


app = typer.Typer(help="Operator client for the round engine API.")
BASE = os.getenv("API_BASE", "http://127.0.0.1:8000")
API_KEY = os.getenv("API_KEY")


def _headers(user_id: int | None = None):
    h = {}
    if API_KEY:
        h["X-API-Key"] = API_KEY
    if user_id is not None:
        h["X-User-Id"] = str(user_id)
    return h


@app.command()
def rounds(game: str = typer.Option(None), duration: int = typer.Option(None), status: str = "open,closed"):
    params = {"status": status}
    if game:
        params["game"] = game
    if duration:
        params["duration"] = duration
    r = requests.get(f"{BASE}/rounds", params=params, headers=_headers())
    typer.echo(r.json())


@app.command()
def stats(round_id: int):
    r = requests.get(f"{BASE}/rounds/{round_id}/stats", headers=_headers())
    typer.echo(r.json())


@app.command()
def control(round_id: int, number: int, color: str = typer.Option(None)):
    body = {"roundId": round_id, "winningNumber": number, "winningColor": color}
    r = requests.post(f"{BASE}/admin/control-result", json=body, headers=_headers())
    typer.echo(r.json())


@app.command()
def bet(user_id: int, round_id: int, bet_type: str, bet_value: str, amount: str, multiplier: int = 1):
    body = {"roundId": round_id, "betType": bet_type, "betValue": bet_value, "amount": amount,
            "multiplier": multiplier}
    r = requests.post(f"{BASE}/bet", json=body, headers=_headers(user_id))
    typer.echo(r.json())


@app.command()
def deposit(user_id: int, amount: str, reference: str = typer.Option(None)):
    r = requests.post(f"{BASE}/admin/deposit", json={"userId": user_id, "amount": amount, "reference": reference},
                      headers=_headers())
    typer.echo(r.json())


@app.command()
def history(user_id: int = typer.Option(None), page: int = 1, limit: int = 20):
    params = {"page": page, "limit": limit}
    if user_id is not None:
        params["user_id"] = user_id
    r = requests.get(f"{BASE}/history", params=params, headers=_headers())
    typer.echo(r.json())


if __name__ == "__main__":
    app()
