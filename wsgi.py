import os

from vera_sync import create_app

# FLASK_ENV elige la config; "development" si no está seteada
app = create_app(os.getenv("FLASK_ENV", "development"))

if __name__ == "__main__":
    # importante para Docker
    app.run(host="0.0.0.0", port=5000, debug=app.config.get("DEBUG", False))
