from app.marketplace import create_app

app = create_app()
