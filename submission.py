"""Tree submission workflow.

    INPUT -> READING_IMAGE -> CLASSIFYING -> VERIFIED -> PERSISTING -> DONE
                                          -> REJECTED -> DONE

Nothing is persisted unless the classifier verified the photo. A failed
remote create still ends in DONE: the tree stays cached as a tentative,
verified record.
"""
import enum
import logging
from dataclasses import dataclass, field

from classifier import decode_image
from geo import resolve_location
from records import Tree, from_data_url, new_tentative_id, to_data_url, utc_now

logger = logging.getLogger(__name__)


class SubmissionState(enum.Enum):
    INPUT = 'input'
    READING_IMAGE = 'reading_image'
    CLASSIFYING = 'classifying'
    VERIFIED = 'verified'
    REJECTED = 'rejected'
    PERSISTING = 'persisting'
    DONE = 'done'


@dataclass
class SubmissionResult:
    classification: object = None
    outcome: object = None
    states: list = field(default_factory=lambda: [SubmissionState.INPUT])

    @property
    def state(self):
        return self.states[-1]

    @property
    def rejected(self):
        return SubmissionState.REJECTED in self.states

    @property
    def notice(self):
        if self.classification is None:
            return 'Verification failed'
        if self.rejected:
            return self.classification.message
        if self.outcome is not None and not self.outcome.synced:
            return f"{self.classification.message} ({self.outcome.notice})"
        return self.classification.message


class SubmissionWorkflow:
    def __init__(self, classifier, engine, session, locations=()):
        self.classifier = classifier
        self.engine = engine
        self.session = session
        self.locations = list(locations)

    def read_image(self, image):
        """Raw bytes plus the data URL stored as the record's photo."""
        if isinstance(image, str):
            image_bytes = from_data_url(image)
            photo_ref = image if image.startswith('data:') else to_data_url(image_bytes)
            return image_bytes, photo_ref
        image_bytes = bytes(image)
        fmt = (decode_image(image_bytes).format or 'jpeg').lower()
        return image_bytes, to_data_url(image_bytes, f"image/{fmt}")

    def submit(self, image, species='', planter_name='', location='', description='',
               latitude=None, longitude=None):
        """Run one submission to settlement.

        Raises DecodeError (or ValueError for a malformed data URL) before
        anything is written.
        """
        result = SubmissionResult()
        result.states.append(SubmissionState.READING_IMAGE)
        image_bytes, photo_ref = self.read_image(image)

        result.states.append(SubmissionState.CLASSIFYING)
        classification = self.classifier.classify(image_bytes)
        result.classification = classification
        if not classification.verified:
            result.states += [SubmissionState.REJECTED, SubmissionState.DONE]
            logger.info(f"Submission rejected: {classification.message}")
            return result

        result.states.append(SubmissionState.VERIFIED)
        lat, lng, source = resolve_location(image_bytes, location, self.locations, latitude, longitude)
        tree = Tree(
            id=new_tentative_id(),
            species=species or planter_name or 'Unknown',
            photo_ref=photo_ref,
            latitude=lat,
            longitude=lng,
            description=description or '',
            confidence=classification.confidence,
            verified=True,
            planted_at=utc_now(),
            uploaded_by=self.session.user_name or 'Unknown',
            planter_name=planter_name or None,
            user_id=self.session.user_id,
            location=location or None,
        )
        logger.info(f"Tree {tree.id} verified, location from {source}")

        result.states.append(SubmissionState.PERSISTING)
        result.outcome = self.engine.write(tree)
        result.states.append(SubmissionState.DONE)
        return result
