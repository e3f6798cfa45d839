import asyncio
from fastmcp import Client

async def main():
    # Point this at the running MCP server, e.g. "http://localhost:8000/mcp"
    async with Client("http://localhost:8000/mcp") as client:
        tools = await client.list_tools()

        print(f"Available tools ({len(tools)}):")
        for tool in tools:
            print(f"* **{tool.name}**: {tool.description}")

        result = await client.call_tool('get_recommendations', { 'user_id': 'default', 'page_size': 5 })
        print(result.content[0].text)

if __name__ == "__main__":
    asyncio.run(main())
