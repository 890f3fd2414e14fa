"""Entry point for python -m vidseq"""
from vidseq.cli.commands import app

if __name__ == "__main__":
    app()
