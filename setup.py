"""
Setup script for the Campus Chat client.
"""

from setuptools import setup, find_packages
import os


def read_readme():
    """Read README.md file."""
    readme_path = os.path.join(os.path.dirname(__file__), 'README.md')
    if os.path.exists(readme_path):
        with open(readme_path, 'r', encoding='utf-8') as f:
            return f.read()
    return "Websocket chat client for the campus assistant chatbot."


def _read_requirement_lines(filename):
    requirements_path = os.path.join(os.path.dirname(__file__), filename)
    requirements = []
    if os.path.exists(requirements_path):
        with open(requirements_path, 'r', encoding='utf-8') as f:
            for line in f:
                line = line.strip()
                if line and not line.startswith('#'):
                    requirements.append(line)
    return requirements


def read_requirements():
    """Read requirements from requirements.txt."""
    return _read_requirement_lines('requirements.txt')


def read_optional_requirements():
    """Read optional requirements from requirements-optional.txt."""
    return _read_requirement_lines('requirements-optional.txt')


setup(
    name="campus-chat",
    version="1.0.0",
    author="Campus Chat Development Team",
    author_email="dev@campuschat.example.com",
    description="Websocket chat client with auth handshake, reconnect and streaming replies",
    long_description=read_readme(),
    long_description_content_type="text/markdown",
    url="https://github.com/example/campus-chat",
    packages=find_packages(exclude=['tests*']),
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Developers",
        "Intended Audience :: End Users/Desktop",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Programming Language :: Python :: 3.13",
        "Topic :: Communications :: Chat",
        "Topic :: Internet",
        "Topic :: Terminals",
    ],
    python_requires=">=3.9",
    install_requires=read_requirements(),
    extras_require={
        "yaml": ["PyYAML>=6.0,<7.0"],
        "full": read_optional_requirements(),
        "dev": [
            "pytest>=7.0.0",
            "pytest-cov>=4.0.0",
            "mypy>=1.0.0",
            "hypothesis>=6.0.0",
            "PyYAML>=6.0,<7.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "campus-chat=campus_chat.client.main:main",
        ],
    },
    project_urls={
        "Bug Reports": "https://github.com/example/campus-chat/issues",
        "Source": "https://github.com/example/campus-chat",
    },
    keywords="chat, websocket, chatbot, terminal, rich, reconnect",
    zip_safe=False,
)
