"""
ANSI colors for the checker's console output
"""

class Colors:
    """Escape codes plus the few styles the CLI prints with"""
    RESET = "\033[0m"
    BOLD = "\033[1m"

    RED = "\033[31m"
    GREEN = "\033[32m"
    YELLOW = "\033[33m"
    BLUE = "\033[34m"
    MAGENTA = "\033[35m"
    CYAN = "\033[36m"
    GREY = "\033[90m"

    @classmethod
    def colorize(cls, text: str, color: str) -> str:
        return f"{color}{text}{cls.RESET}"

    @classmethod
    def header(cls, text: str) -> str:
        """Section title, e.g. the mailbox status block"""
        return cls.colorize(text, cls.BOLD + cls.CYAN)

    @classmethod
    def error(cls, text: str) -> str:
        return cls.colorize(text, cls.RED)

    @classmethod
    def success(cls, text: str) -> str:
        """Confirmation after a mutation (mark, delete, archive)"""
        return cls.colorize(text, cls.GREEN)

    @classmethod
    def unseen_marker(cls, is_unseen: bool) -> str:
        """Bullet in front of a message line: yellow star when unread, grey dash otherwise"""
        if is_unseen:
            return cls.colorize("*", cls.BOLD + cls.YELLOW)
        return cls.colorize("-", cls.GREY)
