"""StareWare - Proctored MCQ test service"""

__version__ = "1.0.0"
