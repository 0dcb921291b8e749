import os
from app import create_app
from utils.config_validator import check_production_readiness

# WSGI entry point: gunicorn main:app
app = create_app()

if os.environ.get('FLASK_ENV') == 'production':
    check_production_readiness()

if __name__ == '__main__':
    app.run(host='0.0.0.0', port=int(os.environ.get('PORT', 5000)), debug=False)
