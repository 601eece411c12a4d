"""
Integrations Module - Model Providers and the Tool Server
==========================================================

Everything that talks to a system outside this process on behalf of an
agent run.

Modules:
    engine_types: Shared ModelCall contract, stream events and engine protocol
    native_engine: openai-agents Runner engine for the native provider
    generic_engine: litellm engine for every other provider
    providers: Credential checks, model aliases and the ProviderRouter
    tool_client: WebSocket JSON-RPC client for the workspace tool server
    tool_pool: Coalescing connection pool keyed by workspace and tool set

Example:
    Leasing tools and running a streamed call:

        pool = ToolConnectionPool.from_settings(settings)
        lease = await pool.get_client("ws-1", ["search_contacts"], "chat")
        try:
            call = ModelCall(provider, model, prompt, history, tools=lease.connection)
            async for event in router.stream(call):
                ...
        finally:
            await lease.dispose()

See Also:
    :mod:`agent_engine.api.services.tool_broker`: Graceful tool degradation
    :mod:`agent_engine.api.services.chat_service`: Streaming chat turns
"""
