'''Exceptions and warnings raised while fitting and scoring rule ensembles
'''


class RuleFitValidationError(ValueError):
    """Invalid estimator parameters, raised before any training starts."""


class RuleLimitError(RuntimeError):
    """Too many candidate rules were extracted from the trees."""

    def __init__(self, n_candidates, max_candidates):
        self.n_candidates = n_candidates
        self.max_candidates = max_candidates
        super().__init__(
            f'{n_candidates} candidate rules exceed max_candidate_rules={max_candidates}; '
            'lower max_rule_length or rule_generation_ntrees')

    def __reduce__(self):
        # raised inside joblib workers, so it must survive pickling
        return self.__class__, (self.n_candidates, self.max_candidates)


class SchemaError(ValueError):
    """A frame does not provide the columns the fitted model refers to."""

    def __init__(self, missing, message=None):
        self.missing = list(missing)
        if message is None:
            message = f'frame is missing columns required by the fitted model: {self.missing}'
        super().__init__(message)

    def __reduce__(self):
        return self.__class__, (self.missing, str(self))


class StageError(RuntimeError):
    """Failure of an external collaborator (tree trainer or linear solver)."""

    def __init__(self, stage, message):
        self.stage = stage
        self.message = message
        super().__init__(f'{stage} failed: {message}')

    def __reduce__(self):
        return self.__class__, (self.stage, self.message)


class TrainingCancelled(RuntimeError):
    pass


class DegradedFitWarning(UserWarning):
    """The linear solver did not converge anywhere on the path, an intercept-only model was used."""
