from app.treetrace import create_app

app = create_app()
