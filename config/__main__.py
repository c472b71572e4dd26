"""Command line interface for checking configuration loading"""
from . import settings_conf


def main():
    """Display loaded configuration"""
    print("\nSettings Configuration:")
    print("-" * 50)
    for key, value in sorted(settings_conf.items()):
        print(f"{key}: {value}")


if __name__ == "__main__":
    main()
