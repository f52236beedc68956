"""Document state engine, completion rules and window calculator"""
