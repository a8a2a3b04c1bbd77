"""External service clients: Datacrazy CRM, ViPP, N8N, Evolution, Google Sheets."""
