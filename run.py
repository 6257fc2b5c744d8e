import uvicorn

def main():
    uvicorn.run(
        "fleetdeck.main:app",
        host="0.0.0.0",
        port=8000,
        reload=False,
        log_level="info"
    )

if __name__ == "__main__":
    main()
