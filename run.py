"""Local development entry point.

Usage:
    python run.py

Then:
    curl -X POST localhost:8081/charge \
        -H "Idempotency-Key: order-1" \
        -d '{"user_id": "u1", "amount": 100, "currency": "USD"}'
"""

from dotenv import load_dotenv

load_dotenv()  # Load .env before anything else

from vault import create_app  # noqa: E402

app = create_app()

if __name__ == "__main__":
    app.run(debug=True, host="0.0.0.0", port=8081)
