"""
Standalone script to run the bot together with its web dashboard.
The dashboard reads live guild data from the bot, so both share one process.
"""
import os
import sys

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from guildpanel.bot import main

if __name__ == '__main__':
    print("🌐 Starting GuildPanel bot and dashboard...")
    print(f"📍 Dashboard will be available on port {os.getenv('DASHBOARD_PORT', '8003')}")
    print("🔑 Make sure your .env file has DISCORD_TOKEN, DISCORD_CLIENT_ID, DISCORD_CLIENT_SECRET and FLASK_SECRET_KEY configured")
    print("")

    main()
