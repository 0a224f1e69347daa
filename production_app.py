# Signage Studio server: screens, catalog and fal.ai generation behind waitress
import atexit

from waitress import serve

from signage_studio import create_app

# =============================================================================
# @app_main - Application Entry Point
# =============================================================================
if __name__ == '__main__':
    app = create_app()
    services = app.extensions['signage_studio']

    # Stock layouts on first start, then pick up generations a restart interrupted
    services['templates'].seed_default_templates()
    services['orchestrator'].resume_pending()
    atexit.register(services['orchestrator'].shutdown)

    host = app.config['HOST']
    port = app.config['PORT']
    print(f"🚀 Signage Studio starting on: {host}:{port}")
    print(f"📺 Screens fetch their feed from: {app.config['PUBLIC_BASE_URL']}/api/display/<screen_id>")
    print(f"🎨 Generated files are served from: {app.config['PUBLIC_BASE_URL']}/uploads/")

    serve(app, host=host, port=port, threads=4)
