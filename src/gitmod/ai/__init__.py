"""
Spam classification.

- **spam_classifier.py**: Asks an OpenAI-compatible model whether a message is
  spam; any failure counts as "not spam".
"""
