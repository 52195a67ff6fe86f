from spotctl import create_app
import os

# This file exists solely for gunicorn to have a WSGI entry point
app = create_app(os.getenv('FLASK_ENV', 'development'))

if __name__ == '__main__':
    app.run(
        host=app.config.get('HOST', '0.0.0.0'),
        port=app.config.get('PORT', 3000),
        debug=app.debug
    )
