"""Judo in Cloud plugin.

Registers the API settings and an API key auth method, and hands the
resolved settings to the bundled MCP server through its environment.
"""

from plugin_runtime.plugins.loader import PluginDefinition, define_plugin


def on_initialize(ctx):
    ctx.register.config({
        "apiUrl": {
            "type": "string",
            "label": "API URL",
            "env": "JUDO_API_URL",
            "default": "https://api.judoincloud.com",
        },
        "apiKey": {
            "type": "string",
            "label": "API key",
            "sensitive": True,
            "env": "JUDO_API_KEY",
        },
    })
    ctx.register.auth.api_key(id="apiKey", label="API key", config_field=ctx.config.field("apiKey"))


async def on_start(ctx):
    api_key = ctx.config.get_optional("apiKey")
    auth = ctx.auth.get()
    if auth is not None and auth.secret:
        api_key = auth.secret
    if not api_key:
        ctx.logger.warning("No API key configured, member lookups will fail")
        return False
    ctx.logger.info(f"Judo in Cloud ready for {ctx.org.name}")
    return True


async def on_validate_auth(ctx):
    return bool(ctx.auth and ctx.auth.secret)


async def on_disable(ctx):
    ctx.logger.info(f"Judo in Cloud disabled for {ctx.org.name}")


plugin = define_plugin(
    PluginDefinition(
        name="judo-in-cloud",
        on_initialize=on_initialize,
        on_start=on_start,
        on_validate_auth=on_validate_auth,
        on_disable=on_disable,
    )
)
