"""Field-oriented BLDC motor control: fast trig, SVM, current loop, encoder PLL and position/velocity control against a simulated board."""

__version__ = "0.1.0"