import os

from shadowsettle import create_app

# factory con config por nombre (FLASK_ENV), por defecto "development"
app = create_app(os.getenv("FLASK_ENV", "development"))

if __name__ == "__main__":
    # importante para Docker
    app.run(host="0.0.0.0", port=int(os.getenv("PORT", "5000")), debug=app.config.get("DEBUG", False))
