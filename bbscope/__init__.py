"""
bbscope - Bitbucket Cloud pull requests from the terminal.

A CLI tool that:
1. Works out which workspace/repository a command targets (flags, local
   .bbscope file, git remote, global profile)
2. Lists and views pull requests, comments, build statuses and repositories
3. Shows pull request diffs filtered by glob patterns and size limits
4. Keeps credentials in the OS keyring, never in config files

Usage:
    bbscope pr list           # Open PRs in the current repository
    bbscope pr view 42        # Details of PR #42
    bbscope pr diff '*.py'    # Diff of the PR for the current branch
    bbscope repo list         # Repositories in the workspace
    bbscope auth login        # Store an app password
    bbscope config set workspace acme
"""

__version__ = "0.1.0"
__author__ = "bbscope"
